"""HTTP transport for claimy"""
