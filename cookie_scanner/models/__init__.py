# Models package: re-export the public models.
# Prefer importing from the specific submodule (e.g. cookie_scanner.models.scan).

from cookie_scanner.models.categorization import (
    KNOWN_CATEGORIES as KNOWN_CATEGORIES,
    CategorizationCacheEntry as CategorizationCacheEntry,
    CategoryCreateRequest as CategoryCreateRequest,
    CategoryDefinition as CategoryDefinition,
    CategoryUpdateRequest as CategoryUpdateRequest,
    CookieCategory as CookieCategory,
)
from cookie_scanner.models.scan import (
    CookieAddRequest as CookieAddRequest,
    CookieAddResponse as CookieAddResponse,
    CookieRecord as CookieRecord,
    CookieSource as CookieSource,
    CookieUpdateRequest as CookieUpdateRequest,
    SameSite as SameSite,
    ScanRequest as ScanRequest,
    ScanResult as ScanResult,
    ScanStartResponse as ScanStartResponse,
    ScanStatus as ScanStatus,
    ScanStatusResponse as ScanStatusResponse,
    ScanSummary as ScanSummary,
    ScanTarget as ScanTarget,
    SubdomainCookieGroup as SubdomainCookieGroup,
)
