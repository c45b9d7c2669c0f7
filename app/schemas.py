from typing import List, Dict, Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field, validator
from datetime import datetime

T = TypeVar('T')

# =============================================================================
# API ENVELOPE
# =============================================================================

class ApiMeta(BaseModel):
    version: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    pagination: Optional[Dict[str, Any]] = None

class ApiError(BaseModel):
    code: str
    message: str
    target: Optional[str] = None # Field name or entity ID
    details: Optional[Any] = None

class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)
    errors: Optional[List[ApiError]] = None

# =============================================================================
# EXPENSE ENTRIES (wire shape, camelCase as the browser sends it)
# =============================================================================

class WageEntryIn(BaseModel):
    id: Optional[str] = None
    employeeName: str = ""
    role: str = ""
    annualSalary: float = Field(default=0.0, ge=0)
    rdPercentage: float = Field(default=0.0, ge=0, le=100)

class ContractorEntryIn(BaseModel):
    id: Optional[str] = None
    contractorName: str = ""
    amount: float = Field(default=0.0, ge=0)
    description: str = ""

class SupplyEntryIn(BaseModel):
    id: Optional[str] = None
    supplyType: str = ""
    amount: float = Field(default=0.0, ge=0)
    rdPercentage: float = Field(default=100.0, ge=0, le=100)

class CloudSoftwareEntryIn(BaseModel):
    id: Optional[str] = None
    serviceName: str = ""
    monthlyCost: float = Field(default=0.0, ge=0)
    rdPercentage: float = Field(default=100.0, ge=0, le=100)

class ExpenseSnapshot(BaseModel):
    wages: List[WageEntryIn] = []
    contractors: List[ContractorEntryIn] = []
    supplies: List[SupplyEntryIn] = []
    cloudSoftware: List[CloudSoftwareEntryIn] = []

class SaveExpensesRequest(BaseModel):
    expenses: ExpenseSnapshot
    version: Optional[int] = Field(default=None, ge=0) # version the browser loaded

# =============================================================================
# CALCULATOR & PRICING
# =============================================================================

class CalculatorInput(BaseModel):
    wages: float = Field(default=0.0, ge=0)
    wageRdPercent: float = Field(default=0.0, ge=0, le=100)
    contractors: float = Field(default=0.0, ge=0)
    supplies: float = Field(default=0.0, ge=0)
    suppliesRdPercent: float = Field(default=100.0, ge=0, le=100)
    cloudMonthly: float = Field(default=0.0, ge=0)
    cloudRdPercent: float = Field(default=100.0, ge=0, le=100)
    additionalYears: int = Field(default=0, ge=0)

class QuoteRequest(BaseModel):
    creditAmount: float = Field(default=0.0, ge=0)
    selectedYears: List[int] = []
    stateCredits: float = Field(default=0.0, ge=0)

    @validator('selectedYears')
    def dedupe_years(cls, v):
        return list(dict.fromkeys(v))

class QRECalculateRequest(BaseModel):
    additionalYears: int = Field(default=0, ge=0)

# =============================================================================
# REVIEW & DOCUMENTS
# =============================================================================

class DocumentStatusRequest(BaseModel):
    trackingId: str = Field(..., min_length=1)

class TrackDownloadRequest(BaseModel):
    documentId: str = Field(..., min_length=1)
    fileName: Optional[str] = None
    fileType: Optional[str] = None

# =============================================================================
# COMPANY
# =============================================================================

class CompanyInfoRequest(BaseModel):
    companyName: str = Field(..., min_length=1)
    ein: str = ""
    entityType: str = ""
    annualRevenue: str = ""
    employeeCount: Optional[int] = Field(default=None, ge=0)
    rdEmployeeCount: Optional[int] = Field(default=None, ge=0)
    yearFounded: Optional[int] = Field(default=None, ge=1800)
    primaryState: str = ""
    rdStates: List[str] = []
    hasMultipleStates: bool = False
    businessDescription: str = ""
    rdActivities: str = ""

    @validator('companyName')
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("companyName must not be blank")
        return v

    @validator('rdStates')
    def clean_states(cls, v):
        return [s.strip() for s in v if s and s.strip()]
