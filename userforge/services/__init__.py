"""Persistence and user management services"""
