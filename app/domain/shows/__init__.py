"""Shows domain - Horse show lookup"""
