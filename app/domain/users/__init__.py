"""Users domain - Accounts, Stripe onboarding, payment approvers and trusted providers"""
