"""Request-time middleware and dependencies"""
