"""Requests domain - Service requests and provider schedules"""
