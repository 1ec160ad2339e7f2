"""
Lessons module.

- Module detail with its lessons (search + modality filter)
- Multi-step lesson creation (details, exercise, files) posted as one multipart request
- Lesson detail/edit and the exercise bank browser
"""
