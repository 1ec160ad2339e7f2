"""
Users module: platform accounts plus their student/teacher profiles.
"""
