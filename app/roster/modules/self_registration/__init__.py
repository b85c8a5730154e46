"""
Public sign-up for groups that offer a self-registration role type, and
self-inscription for people who already have an account.
"""
