"""
Central constants for the backoffice.

Values on the left of each mapping are the wire values the API expects.
"""
from __future__ import annotations

PAGE_SIZE_OPTIONS = (20, 30, 50, 100)
DEFAULT_PAGE_SIZE = 20

LESSON_TYPES = {
    "live": "Live",
    "asynchronous": "Asynchronous",
}

EXERCISE_DIFFICULTIES = {
    "easy": "Easy",
    "medium": "Medium",
    "hard": "Hard",
}

EXERCISE_CATEGORIES = {
    "grammar": "Grammar",
    "listening": "Listening",
    "pronunciation": "Pronunciation",
}

SUBSCRIPTION_STATUSES = {
    "inscrito": "Enrolled",
    "estudando": "Studying",
    "finalizado": "Finished",
    "desistente": "Dropped out",
}

CLASS_ACTIVE_FILTERS = {
    "": "All classes",
    "true": "Active",
    "false": "Inactive",
}

# "teatcher" is how the API spells the teacher role.
USER_ROLE_FILTERS = {
    "student": "Student",
    "teatcher": "Teacher",
    "manager": "Manager",
}

DAYS_OF_WEEK = {
    "Mon": "Monday",
    "Tue": "Tuesday",
    "Wed": "Wednesday",
    "Thu": "Thursday",
    "Fri": "Friday",
    "Sat": "Saturday",
    "Sun": "Sunday",
}

NOT_INFORMED = "Not informed"
