"""Horses domain - Horse profiles, ownership and leases"""
