from pydantic import Field
from typing import Optional, List, Dict

from conxion.schemas.base_schema import RequestBody


class ProfileSearchRequest(RequestBody):
    country: Optional[str] = None
    cities: List[str] = []
    roles: List[str] = []
    style_levels: Dict[str, str] = Field(default={}, alias="styleLevels")
    other_style: bool = Field(default=False, alias="otherStyle")
    languages: List[str] = []
    interest: Optional[str] = None
    availability: Optional[str] = None
    verified_only: bool = Field(default=False, alias="verifiedOnly")
    my_city_only: bool = Field(default=False, alias="myCityOnly")
    limit: int = 200
