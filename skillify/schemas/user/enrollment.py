import uuid

from pydantic import BaseModel, Field


class EnrollCourse(BaseModel):
    course_id: uuid.UUID = Field(alias="courseId")

    model_config = {"populate_by_name": True}


class VerifyPayment(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)
    course_id: uuid.UUID = Field(alias="courseId")

    model_config = {"populate_by_name": True}
