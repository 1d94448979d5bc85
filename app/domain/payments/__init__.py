"""Payments domain - Stripe charges, provider payouts and payment records"""
