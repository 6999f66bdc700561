"""auth/ -- Session authentication and rotation engine for the grade book.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
