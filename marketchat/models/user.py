from typing import Literal, Optional, TypedDict


AccountRole = Literal["user", "contractor", "admin"]


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    profile_picture: Optional[str]
    role: AccountRole
