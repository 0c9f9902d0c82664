"""Shared validators package for the application.

This package contains reusable validation functions that can be used
across different features and schemas.

Available validators:
- password.py: Password strength validation
- username.py: Username format validation
"""
