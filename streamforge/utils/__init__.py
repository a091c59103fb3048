"""Shared utilities: logging"""
