from salespipe.pipeline.api import items_router, leads_router, offers_router, sales_router
from salespipe.pipeline.calculator import TotalsCalculator, totals_calculator
from salespipe.pipeline.conversion import ConversionEngine, conversion_engine
from salespipe.pipeline.errors import (
    CreationFailedError,
    InvalidStateError,
    NotFoundError,
    PipelineError,
    StoreUnavailableError,
)
from salespipe.pipeline.leads import LeadService, lead_service
from salespipe.pipeline.models import (
    PipelineCounter,
    PipelineLead,
    PipelineLicense,
    PipelineOffer,
    PipelinePayment,
    PipelineProduct,
    PipelineProspect,
    PipelineRental,
    PipelineSale,
)
from salespipe.pipeline.offers import OfferService, offer_service
from salespipe.pipeline.sales import SaleService, sale_service
from salespipe.pipeline.sync import PipelineSyncService, pipeline_sync_service

__all__ = [
    "items_router",
    "leads_router",
    "offers_router",
    "sales_router",
    "TotalsCalculator",
    "totals_calculator",
    "ConversionEngine",
    "conversion_engine",
    "CreationFailedError",
    "InvalidStateError",
    "NotFoundError",
    "PipelineError",
    "StoreUnavailableError",
    "LeadService",
    "lead_service",
    "PipelineCounter",
    "PipelineLead",
    "PipelineLicense",
    "PipelineOffer",
    "PipelinePayment",
    "PipelineProduct",
    "PipelineProspect",
    "PipelineRental",
    "PipelineSale",
    "OfferService",
    "offer_service",
    "SaleService",
    "sale_service",
    "PipelineSyncService",
    "pipeline_sync_service",
]
