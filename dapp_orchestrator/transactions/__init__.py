"""
Transaction pipeline: build, manage lookup tables, sign/submit, confirm.
"""
