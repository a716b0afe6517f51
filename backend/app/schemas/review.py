"""Pydantic schemas for post-payment reviews."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ReviewCreate(BaseModel):
    booking_id: str
    customer_id: str
    rating: int
    review_text: Optional[str] = None
    punctuality_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    professionalism_rating: Optional[int] = None


class ReviewUpdate(BaseModel):
    customer_id: str
    rating: Optional[int] = None
    review_text: Optional[str] = None
    punctuality_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    professionalism_rating: Optional[int] = None


class ReviewResponseIn(BaseModel):
    contractor_id: str
    response: str


class ReviewOut(BaseModel):
    review_id: str
    booking_id: str
    customer_id: str
    contractor_id: str
    rating: int
    punctuality_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    professionalism_rating: Optional[int] = None
    review_text: Optional[str] = None
    contractor_response: Optional[str] = None
    contractor_response_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReviewEligibilityOut(BaseModel):
    booking_id: str
    can_review: bool
    reason: Optional[str] = None


class RatingSummaryOut(BaseModel):
    contractor_id: str
    total_reviews: int
    average_rating: float
    average_punctuality: float
    average_quality: float
    average_professionalism: float
    rating_distribution: dict[int, int]

    model_config = {"from_attributes": True}
