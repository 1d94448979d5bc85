"""Legal domain - Terms of service and privacy policy"""
