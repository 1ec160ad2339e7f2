"""
Courses module.

- Course catalog with search, language filter and pagination
- Course creation and inline edit, including the ordered module list
- Module creation attached to a course
"""
