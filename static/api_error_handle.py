from typing import Optional


def api_error_handle(status: int) -> Optional[str]:
    if status == 400:
        return 'Malformed license request, the challenge or track uri was not accepted'
    if status == 401:
        return 'Authorization failed, the developer token may have expired'
    if status == 403:
        return 'Forbidden, check media-user-token and the account subscription'
    if status == 404:
        return 'License endpoint or track not found'
    if status == 429:
        return 'Too many license requests, wait before opening a new session'
    if status >= 500:
        return 'License server error'
    if 200 <= status < 300:
        return 'License server answered without a license field'
    return None
