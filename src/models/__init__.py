# -*- coding: utf-8 -*-
from src.database import db

from .credit import Credit, CreditType
from .purchase import Purchase, PurchaseStatus

__all__ = ["db", "Credit", "CreditType", "Purchase", "PurchaseStatus"]
