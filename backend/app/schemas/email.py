from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal

class EmailSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: Optional[str] = None
    sender: Optional[str] = None
    summary: Optional[str] = None
    received_at: Optional[datetime] = None
    is_read: bool = False
    category_id: Optional[int] = None
    category_name: Optional[str] = None

class EmailOut(EmailSummaryOut):
    gmail_id: str
    thread_id: Optional[str] = None
    recipients: List[str] = []
    body: Optional[str] = None
    html_body: Optional[str] = None
    clean_text: Optional[str] = None
    category_confidence: Optional[float] = None
    is_archived: bool = False
    created_at: Optional[datetime] = None

class EmailList(BaseModel):
    total: int
    count: int
    limit: int
    offset: int
    items: List[EmailSummaryOut]

class CategoryUpdate(BaseModel):
    category_id: Optional[int] = None

class BulkActionRequest(BaseModel):
    email_ids: List[int] = Field(..., min_length=1)
    action: Literal['delete', 'unsubscribe', 'mark_read', 'mark_unread']

class UnsubscribeRequest(BaseModel):
    url: str
    email_content: str = ''

class SyncErrorDetail(BaseModel):
    id: str
    error: str

class SyncResponse(BaseModel):
    processed: int
    errors: int
    skipped: int = 0
    total_found: int = 0
    max_processed: int = 0
    message: str = ''
    error_details: List[SyncErrorDetail] = []
