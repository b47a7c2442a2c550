from pymongo.errors import ServerSelectionTimeoutError


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class UnreachableCollection:
    """Every collection method fails the way Motor does when no server answers"""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("No servers found yet")
        return fail


class UnreachableDatabase:
    def __getattr__(self, name):
        return UnreachableCollection()
