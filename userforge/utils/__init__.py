"""Shared utilities: configuration, logging, exceptions"""
