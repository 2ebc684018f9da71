"""Mentor matching service: DB models, matching pipeline, admin API.

Pairs mentors with instructor and student mentees by shared interests,
chapter, mentor workload and profile completeness.
"""
