"""Notifications domain - In-app notification feed"""
