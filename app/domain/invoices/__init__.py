"""Invoices domain - Invoices, reminders and CSV export"""
