"""Translation between Visibility and the native ACL vocabulary of remote stores."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Union

from .exceptions import InvalidVisibilityError
from .interfaces import Visibility

S3_ALL_USERS_URI = 'http://acs.amazonaws.com/groups/global/AllUsers'
S3_PERMISSION_READ = 'READ'
S3_PERMISSION_WRITE = 'WRITE'

_S3_CANNED_ACL = {
    Visibility.PRIVATE: 'private',
    Visibility.PUBLIC_READ: 'public-read',
    Visibility.PUBLIC_READ_WRITE: 'public-read-write',
}

# OSS uses the same spelling; 'default' (inherit bucket ACL) has no mapping.
_OSS_ACL = {
    Visibility.PRIVATE: 'private',
    Visibility.PUBLIC_READ: 'public-read',
    Visibility.PUBLIC_READ_WRITE: 'public-read-write',
}
_OSS_ACL_REVERSE = {acl: visibility for visibility, acl in _OSS_ACL.items()}


def s3_acl_for(visibility: Union[Visibility, str]) -> str:
    return _S3_CANNED_ACL[Visibility.parse(visibility)]


def visibility_from_s3_grants(grants: Iterable[Dict[str, Any]]) -> Visibility:
    """
    Derive visibility from an S3 ``GetObjectAcl`` grant list.

    Only grants to the AllUsers group matter. A WRITE grant without READ
    matches no canned ACL and is reported as invalid.
    """
    has_read, has_write = False, False
    for grant in grants or []:
        grantee = grant.get('Grantee') or {}
        if grantee.get('URI') != S3_ALL_USERS_URI:
            continue
        permission = grant.get('Permission')
        if permission == S3_PERMISSION_READ:
            has_read = True
        elif permission == S3_PERMISSION_WRITE:
            has_write = True

    if has_read and has_write:
        return Visibility.PUBLIC_READ_WRITE
    if has_read:
        return Visibility.PUBLIC_READ
    if has_write:
        raise InvalidVisibilityError('unrecognized ACL: public WRITE grant without READ')
    return Visibility.PRIVATE


def oss_acl_for(visibility: Union[Visibility, str]) -> str:
    return _OSS_ACL[Visibility.parse(visibility)]


def visibility_from_oss_acl(acl: str) -> Visibility:
    try:
        return _OSS_ACL_REVERSE[acl]
    except KeyError:
        raise InvalidVisibilityError(f"unrecognized OSS object ACL: {acl!r}") from None
