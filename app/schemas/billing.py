from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    tier: str


class VerifyCheckoutRequest(BaseModel):
    session_id: str


class PayPalCreateSubscriptionRequest(BaseModel):
    tier: str


class PayPalVerifySubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(alias="subscriptionId")
