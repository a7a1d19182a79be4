"""REST backend for the instructor/student application portal."""
