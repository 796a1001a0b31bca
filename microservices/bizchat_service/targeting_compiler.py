"""
Targeting Compiler

Converts a demographic targeting selection into the vendor's ATS filter
expression plus a human-readable description. Geofence targeting does not
go through this compiler.
"""

import html
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .models import (
    CategorySelection,
    DemographicTargeting,
    FilterCondition,
    FilterDataType,
    FilterExpression,
    Gender,
    GeofenceTargeting,
    LocationKind,
    ProfilingFilter,
    ProfilingValueType,
)
from .protocols import TargetingValidationError, VendorGatewayProtocol

logger = logging.getLogger(__name__)


NO_FILTER_DESCRIPTION = "전체 대상"

AGE_MIN_BOUND = 10
AGE_MAX_BOUND = 100

# Region name -> vendor home_location hcode
REGION_HCODES: Dict[str, str] = {
    "서울": "11",
    "부산": "26",
    "대구": "27",
    "인천": "28",
    "광주": "29",
    "대전": "30",
    "울산": "31",
    "세종": "36",
    "경기": "41",
    "강원": "42",
    "충북": "43",
    "충남": "44",
    "전북": "45",
    "전남": "46",
    "경북": "47",
    "경남": "48",
    "제주": "50",
}


@dataclass(frozen=True)
class CategoryDomain:
    """Vendor metadata for one category interest domain"""
    field: str
    meta_type: str
    label: str
    meta_endpoint: Optional[str]  # None: no name lookup available


SHOPPING = CategoryDomain("shopping_categories", "STREET", "11번가", "11st")
WEBAPP = CategoryDomain("webapp_categories", "app", "앱/웹", "webapp")
CALL_USAGE = CategoryDomain("call_usage_categories", "tel", "통화", None)

CATEGORY_DOMAINS: Tuple[CategoryDomain, ...] = (SHOPPING, WEBAPP, CALL_USAGE)

LOCATION_CODES = {
    LocationKind.HOME: ("home_location", "추정 집주소"),
    LocationKind.WORK: ("work_location", "추정 직장주소"),
}


@dataclass(frozen=True)
class CompiledTargeting:
    expression: FilterExpression
    description: str
    description_html: str

    def vendor_expression(self) -> Dict[str, Any]:
        return self.expression.to_vendor()


def render_description_html(description: str) -> str:
    return f"<html><body><p>{html.escape(description)}</p></body></html>"


def _to_number(value: Any, field: str) -> Union[int, float]:
    if isinstance(value, bool):
        raise TargetingValidationError(f"{field} must be numeric, got a boolean", field=field)
    if isinstance(value, int):
        return value
    try:
        number = value if isinstance(value, float) else float(str(value).strip())
    except ValueError:
        raise TargetingValidationError(f"{field} must be numeric, got {value!r}", field=field)
    # NaN and infinity have no JSON encoding
    if not math.isfinite(number):
        raise TargetingValidationError(f"{field} must be a finite number, got {value!r}", field=field)
    if isinstance(value, float) or not number.is_integer():
        return number
    return int(number)


class TargetingCompiler:
    """Compiles DemographicTargeting into a FilterExpression"""

    def __init__(self, strict_regions: bool = False):
        # strict: an unknown region name is an error instead of being dropped
        self.strict_regions = strict_regions

    def compile(
        self, targeting: Union[DemographicTargeting, GeofenceTargeting]
    ) -> Optional[CompiledTargeting]:
        """Compile targeting; returns None for geofence targeting"""
        if isinstance(targeting, GeofenceTargeting):
            return None
        return self.compile_demographic(targeting)

    def compile_demographic(self, targeting: DemographicTargeting) -> CompiledTargeting:
        # Order is part of the vendor contract
        builders = (
            self._age_condition,
            self._gender_condition,
            self._region_condition,
        )
        conditions: List[FilterCondition] = []
        for build in builders:
            condition = build(targeting)
            if condition is not None:
                conditions.append(condition)

        for domain in CATEGORY_DOMAINS:
            condition = self._category_condition(domain, getattr(targeting, domain.field))
            if condition is not None:
                conditions.append(condition)

        conditions.extend(self._location_conditions(targeting))
        conditions.extend(self._profiling_condition(p) for p in targeting.profiling)

        expression = FilterExpression(conditions=conditions)
        if expression.is_empty:
            description = NO_FILTER_DESCRIPTION
        else:
            description = ", ".join(c.desc for c in conditions)

        logger.debug(f"Compiled {len(conditions)} targeting conditions: {description}")
        return CompiledTargeting(
            expression=expression,
            description=description,
            description_html=render_description_html(description),
        )

    # ====================
    # Condition builders
    # ====================

    def _age_condition(self, targeting: DemographicTargeting) -> Optional[FilterCondition]:
        if targeting.age_min is None and targeting.age_max is None:
            return None

        for field, value in (("age_min", targeting.age_min), ("age_max", targeting.age_max)):
            if value is not None and not AGE_MIN_BOUND <= value <= AGE_MAX_BOUND:
                raise TargetingValidationError(
                    f"{field} must be between {AGE_MIN_BOUND} and {AGE_MAX_BOUND}, got {value}",
                    field=field,
                )

        age_min = targeting.age_min if targeting.age_min is not None else 0
        age_max = targeting.age_max if targeting.age_max is not None else 100
        if age_min > age_max:
            raise TargetingValidationError("age_min must not exceed age_max", field="age_min")

        desc = f"연령: {age_min}세 ~ {age_max}세"
        return FilterCondition(
            data={"gt": age_min, "lt": age_max},
            data_type=FilterDataType.NUMBER,
            meta_type="svc",
            code="cust_age_cd",
            desc=desc,
        )

    def _gender_condition(self, targeting: DemographicTargeting) -> Optional[FilterCondition]:
        if targeting.gender == Gender.ALL:
            return None
        code, name = ("1", "남자") if targeting.gender == Gender.MALE else ("2", "여자")
        return FilterCondition(
            data=[code],
            data_type=FilterDataType.CODE,
            meta_type="svc",
            code="sex_cd",
            desc=f"성별: {name}",
        )

    def _region_condition(self, targeting: DemographicTargeting) -> Optional[FilterCondition]:
        if not targeting.regions:
            return None

        hcodes, names = [], []
        for region in targeting.regions:
            hcode = REGION_HCODES.get(region.strip())
            if hcode is None:
                if self.strict_regions:
                    raise TargetingValidationError(f"Unknown region: {region}", field="regions")
                logger.warning(f"Dropping unknown region name: {region}")
                continue
            hcodes.append(hcode)
            names.append(region.strip())

        if not hcodes:
            return None
        return FilterCondition(
            data=hcodes,
            data_type=FilterDataType.CODE,
            meta_type="loc",
            code="home_location",
            desc=f"추정 집주소: {', '.join(names)}",
        )

    def _category_condition(
        self, domain: CategoryDomain, selections: List[CategorySelection]
    ) -> Optional[FilterCondition]:
        if not selections:
            return None

        data = []
        for selection in selections:
            if not selection.is_resolved:
                raise TargetingValidationError(
                    f"{domain.label} category {selection.cat1} has no display name; "
                    f"resolve names before compiling",
                    field=domain.field,
                )
            # The vendor matches on display names, never on codes
            entry = {"cat1": selection.cat1_name}
            if selection.cat2:
                entry["cat2"] = selection.cat2_name
            if selection.cat3:
                entry["cat3"] = selection.cat3_name
            data.append(entry)

        paths = ", ".join(s.display_path() for s in selections)
        return FilterCondition(
            data=data,
            data_type=FilterDataType.CATE,
            meta_type=domain.meta_type,
            code="",
            desc=f"{domain.label}: {paths}",
        )

    def _location_conditions(self, targeting: DemographicTargeting) -> List[FilterCondition]:
        conditions = []
        for kind in (LocationKind.HOME, LocationKind.WORK):
            selected = [loc for loc in targeting.locations if loc.kind == kind]
            if not selected:
                continue
            code, label = LOCATION_CODES[kind]
            conditions.append(
                FilterCondition(
                    data=[loc.code for loc in selected],
                    data_type=FilterDataType.CODE,
                    meta_type="loc",
                    code=code,
                    desc=f"{label}: {', '.join(loc.name for loc in selected)}",
                )
            )
        return conditions

    def _profiling_condition(self, profiling: ProfilingFilter) -> FilterCondition:
        value = profiling.value
        field = f"profiling.{profiling.code}"

        if profiling.value_type == ProfilingValueType.BOOLEAN:
            data, data_type = value, FilterDataType.BOOLEAN
        elif profiling.value_type == ProfilingValueType.NUMBER:
            if not isinstance(value, dict) or not ({"gt", "lt"} & set(value)):
                raise TargetingValidationError(
                    f"Numeric profiling filter {profiling.code} needs a {{gt, lt}} range", field=field
                )
            data = {key: _to_number(bound, field) for key, bound in value.items() if key in ("gt", "lt")}
            data_type = FilterDataType.NUMBER
        else:
            if isinstance(value, str):
                data = [value]
            elif isinstance(value, list):
                data = value
            else:
                raise TargetingValidationError(
                    f"Code profiling filter {profiling.code} needs a code or list of codes", field=field
                )
            data_type = FilterDataType.CODE

        return FilterCondition(
            data=data,
            data_type=data_type,
            meta_type="pro",
            code=profiling.code,
            desc=profiling.desc,
        )


class CategoryNameResolver:
    """Fills missing category display names from the vendor meta endpoints"""

    def __init__(self, gateway: VendorGatewayProtocol):
        self.gateway = gateway
        self._cache: Dict[Tuple[str, Optional[str]], Dict[str, str]] = {}

    async def _names(self, endpoint: str, parent_id: Optional[str]) -> Dict[str, str]:
        key = (endpoint, parent_id)
        if key not in self._cache:
            categories = await self.gateway.fetch_categories(endpoint, parent_id)
            names = {}
            for category in categories:
                names[category.cateid] = category.name
                names[category.id] = category.name
            self._cache[key] = names
        return self._cache[key]

    async def _resolve_selection(self, domain: CategoryDomain, selection: CategorySelection) -> CategorySelection:
        if selection.is_resolved or domain.meta_endpoint is None:
            return selection

        updates = {}
        levels = (
            ("cat1", None),
            ("cat2", selection.cat1),
            ("cat3", selection.cat2),
        )
        for level, parent in levels:
            code = getattr(selection, level)
            if not code or getattr(selection, f"{level}_name"):
                continue
            names = await self._names(domain.meta_endpoint, parent)
            name = names.get(code)
            if name is None:
                raise TargetingValidationError(
                    f"Unknown {domain.label} category code {code}", field=domain.field
                )
            updates[f"{level}_name"] = name
        return selection.model_copy(update=updates)

    async def resolve(self, targeting: DemographicTargeting) -> DemographicTargeting:
        """Return a copy of targeting whose category selections all carry names"""
        updates = {}
        for domain in CATEGORY_DOMAINS:
            selections = getattr(targeting, domain.field)
            if all(s.is_resolved for s in selections):
                continue
            updates[domain.field] = [await self._resolve_selection(domain, s) for s in selections]
        if not updates:
            return targeting
        return targeting.model_copy(update=updates)


def compile_targeting(
    targeting: Union[DemographicTargeting, GeofenceTargeting], strict_regions: bool = False
) -> Optional[CompiledTargeting]:
    return TargetingCompiler(strict_regions=strict_regions).compile(targeting)


__all__ = [
    "NO_FILTER_DESCRIPTION",
    "REGION_HCODES",
    "CategoryDomain",
    "CATEGORY_DOMAINS",
    "CompiledTargeting",
    "TargetingCompiler",
    "CategoryNameResolver",
    "compile_targeting",
    "render_description_html",
]
