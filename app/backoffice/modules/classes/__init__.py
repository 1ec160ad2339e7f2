"""
Classes module: student classes and their subscriptions (enroll, status, remove).
"""
