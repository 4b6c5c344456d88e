"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID.

    Shard consumers in the same group share a prefix; the slug keeps their
    log lines and dead-letter records apart.

    Examples:
        >>> generate_worker_id()
        'brave-golden-tiger'
        >>> generate_worker_id("orders-consumer-0")
        'orders-consumer-0-swift-blue-falcon'
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug
