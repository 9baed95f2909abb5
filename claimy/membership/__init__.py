"""Group membership and messaging collaborators"""
