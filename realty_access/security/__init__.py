"""Credential and token primitives"""
