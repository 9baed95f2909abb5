"""Operator alerting"""
