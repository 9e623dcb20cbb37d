"""
Module 1: Code List Curation & Cohort Extraction
================================================

Builds CPRD GOLD/Aurum code lists from master dictionaries and extracts
matching patient records for the SMI / GLP-1RA study.
"""
