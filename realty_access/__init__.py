"""Tenant-scoped authorization core for the realty CRM"""
