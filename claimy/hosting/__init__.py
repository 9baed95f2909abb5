"""Hosting control plane port and the Pterodactyl client implementing it"""
