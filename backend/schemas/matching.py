from pydantic import BaseModel


class ManualMatchRequest(BaseModel):
    secondary_row_id: int
    primary_item_id: int
