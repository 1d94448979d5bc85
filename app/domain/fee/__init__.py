"""Fee domain - Service fee lookup"""
