"""Texts sent to claimants over the messaging collaborator"""

from datetime import datetime


def credentials_message(
    server_name: str,
    panel_url: str,
    username: str,
    password: str,
    host: str,
    port: int,
) -> str:
    return (
        "*Your server is ready!*\n"
        "\n"
        f"Server: {server_name}\n"
        f"Panel: {panel_url}\n"
        f"Username: {username}\n"
        f"Password: {password}\n"
        f"IP:Port: {host}:{port}\n"
        "\n"
        "*IMPORTANT:* log in and change your password right away.\n"
        "Never share these credentials with anyone."
    )


def deletion_warning_message(grace_period_hours: float, scheduled_at: datetime) -> str:
    hours = f"{grace_period_hours:g}"
    return (
        "*Server deletion warning*\n"
        "\n"
        "You have left the group. Your server will be deleted in "
        f"{hours} hours unless you join again.\n"
        "\n"
        f"Scheduled for: {scheduled_at.strftime('%Y-%m-%d %H:%M %Z')}\n"
        "\n"
        "Rejoin the group to cancel the deletion, and back up any data you need."
    )


def deletion_cancelled_message() -> str:
    return (
        "*Server deletion cancelled*\n"
        "\n"
        "Welcome back! Your server is active again and ready to use."
    )
