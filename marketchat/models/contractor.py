from typing import Optional, TypedDict


class ContractorDocument(TypedDict, total=False):

    _id: str
    # account that owns this business profile
    user_id: str
    business_name: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    profile_picture: Optional[str]
