"""
Self-Healing Locator API Endpoints
==================================
REST API over the element healing service and the scenario executor.
"""

import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from healing import (
    ElementHealingService,
    ScenarioExecutor,
    HealingOptions,
    ProbeUnavailable,
    ElementNotRegistered,
    SelectorNotMatched,
    default_scenario_executor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/healing", tags=["healing"])

_service: Optional[ElementHealingService] = None
_executor: Optional[ScenarioExecutor] = None


def attach_service(service: Optional[ElementHealingService], executor: Optional[ScenarioExecutor] = None):
    """Bind the router to a healing service (None detaches it)"""
    global _service, _executor
    _service = service
    if service is None:
        _executor = None
    else:
        _executor = executor or default_scenario_executor(service)


def get_service() -> ElementHealingService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Healing service is not running")
    return _service


def get_executor() -> ScenarioExecutor:
    get_service()
    return _executor


class RegisterElementRequest(BaseModel):
    element_id: str
    selector: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = None


class FindElementRequest(BaseModel):
    primary_selector: Optional[str] = None
    max_attempts: Optional[int] = None
    similarity_threshold: Optional[float] = None
    selector_timeout_ms: Optional[int] = None
    enable_predictive: Optional[bool] = None


class ExecuteScenarioRequest(BaseModel):
    scenario_type: str
    element_id: str
    selector: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class ExecuteMultipleRequest(BaseModel):
    scenario_types: List[str]
    element_id: str
    selector: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


# =========================================================================
# ELEMENT ENDPOINTS
# =========================================================================

@router.post("/elements/register")
async def register_element(request: RegisterElementRequest):
    """Locate an element by selector and start tracking it"""
    service = get_service()
    try:
        result = await service.register_by_selector(
            request.element_id,
            request.selector,
            metadata=request.metadata,
            timeout_ms=request.timeout_ms,
        )
        return {"success": True, "element": result}
    except SelectorNotMatched as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProbeUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Element registration failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/elements/{element_id}/find")
async def find_element(element_id: str, request: Optional[FindElementRequest] = None):
    """
    Find a tracked element, healing its selector if needed.

    The response reports the stage that succeeded, or every reason the
    stages gave up when nothing was found.
    """
    service = get_service()
    request = request or FindElementRequest()
    try:
        options = HealingOptions.from_config(
            service.config,
            max_attempts=request.max_attempts,
            similarity_threshold=request.similarity_threshold,
            selector_timeout_ms=request.selector_timeout_ms,
            enable_predictive=request.enable_predictive,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = await service.find_element_with_healing(element_id, request.primary_selector, options)
        return {"success": result.found, "result": result.to_dict()}
    except ProbeUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Healing request failed for {element_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/elements/{element_id}")
async def get_element(element_id: str):
    """Latest signature of a tracked element"""
    service = get_service()
    try:
        signature = service.get_element(element_id)
        return {"success": True, "element_id": element_id, "signature": signature.to_dict()}
    except ElementNotRegistered as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/elements/{element_id}/history")
async def get_element_history(element_id: str):
    """Signature history of a tracked element, oldest first"""
    service = get_service()
    history = service.get_element_history(element_id)
    return {
        "success": True,
        "element_id": element_id,
        "history": [signature.to_dict() for signature in history],
    }


@router.delete("/elements/{element_id}")
async def unregister_element(element_id: str):
    """Stop tracking an element"""
    service = get_service()
    if not service.unregister_element(element_id):
        raise HTTPException(status_code=404, detail=f"Element not registered: {element_id}")
    return {"success": True, "message": f"Element {element_id} unregistered"}


# =========================================================================
# REPORTING ENDPOINTS
# =========================================================================

@router.get("/report")
async def get_report():
    """Healing performance summary"""
    service = get_service()
    try:
        return {"success": True, "report": service.get_healing_report()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/analysis")
async def analyze_page():
    """Check every tracked element against the current page"""
    service = get_service()
    try:
        return {"success": True, "analysis": await service.analyze_page_changes()}
    except ProbeUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Page analysis failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =========================================================================
# SCENARIO ENDPOINTS
# =========================================================================

@router.post("/scenarios/execute")
async def execute_scenario(request: ExecuteScenarioRequest):
    """Run one scenario with its configured timeout and retries"""
    service = get_service()
    executor = get_executor()
    try:
        result = await executor.execute(
            request.scenario_type, service.probe, request.element_id, request.selector, request.options
        )
        return {"success": result.success, "result": result.to_dict()}
    except ProbeUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/scenarios/execute-multiple")
async def execute_multiple_scenarios(request: ExecuteMultipleRequest):
    """Run several scenarios concurrently and return the best result"""
    service = get_service()
    executor = get_executor()
    try:
        result = await executor.execute_multiple(
            request.scenario_types, service.probe, request.element_id, request.selector, request.options
        )
        return {"success": result.best_result is not None, "result": result.to_dict()}
    except ProbeUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/scenarios")
async def list_scenarios():
    """Registered scenarios with their configuration"""
    return {"success": True, "scenarios": get_executor().list_scenarios()}


@router.get("/scenarios/metrics")
async def get_scenario_metrics():
    """Execution metrics across recent scenario runs"""
    return {"success": True, "metrics": get_executor().get_performance_metrics()}


@router.get("/scenarios/recommendations/{element_id}")
async def get_scenario_recommendations(element_id: str):
    """Scenarios suggested by the traits of a tracked element"""
    service = get_service()
    executor = get_executor()
    try:
        signature = service.get_element(element_id)
    except ElementNotRegistered as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "success": True,
        "element_id": element_id,
        "recommendations": executor.get_recommended_scenarios(signature),
    }
