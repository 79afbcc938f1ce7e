"""Centralized user-facing text for the astrocache CLI."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "Astrocache – offline-first search over the NASA Image and Video Library."
    HELP_TERM = "Free-text term sent to the NASA image search."
    HELP_CACHED_TERM = "Term whose cached results should be shown (defaults to the last search)."
    HELP_SEARCH_FORMAT = "Output format: rich (table) or porcelain (tab separated)."
    HELP_RECENT_LIMIT = "Number of recent search terms to display."
    HELP_SHOW_ID = "NASA id of a cached item."
    HELP_FORGET_TERM = "Search term to remove from the recent list and cache."
    HELP_VERBOSE = "Log cache and network activity to stderr."
    HELP_SET_API_URL = "Set the search endpoint (defaults to the public NASA images API)."
    HELP_CLEAR_API_URL = "Reset the search endpoint to the default."
    HELP_SET_TIMEOUT = "Set the network timeout in seconds."
    HELP_SET_RECENT_LIMIT = "Set how many recent searches are listed by default."
    HELP_SET_RECENCY_POLICY = (
        "Choose how re-searching a term affects recent ordering: "
        "refresh (move to top) or first (keep first search time)."
    )
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SHOW_CACHE = "Show row counts of the local cache."
    HELP_CLEAR_CACHE = "Delete every cached item, asset and search term."

    ERROR_EMPTY_TERM = "Please enter a search term"
    ERROR_NO_LAST_QUERY = "No previous search found. Pass a term explicitly."
    ERROR_TIMEOUT_INVALID = "Timeout must be greater than 0."
    ERROR_RECENT_LIMIT_INVALID = "Recent limit must be greater than 0."
    ERROR_RECENCY_POLICY_INVALID = "Unsupported recency policy '{value}'. Allowed values: {allowed}."
    ERROR_API_URL_CONFLICT = "Use either --set-api-url or --clear-api-url, not both."
    ERROR_API_URL_EMPTY = "API URL must not be empty."
    ERROR_CONFIG_JSON_INVALID = "Config payload must be a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Invalid value for config field '{field}'."
    ERROR_STORAGE = "Local cache failure: {reason}"
    ERROR_ITEM_MISSING = "No cached item with NASA id {nasa_id}."

    ERROR_HTTP_STATUS = "HTTP {status}"
    ERROR_NETWORK = "Network error: {reason}"
    ERROR_DECODING = "Unable to process server response: {reason}"

    INFO_SEARCH_RUNNING = "Searching NASA images for \"{term}\"..."
    INFO_OFFLINE_RESULTS = "Network unavailable; showing cached results for \"{term}\"."
    INFO_NO_RESULTS = "No results for \"{term}\"."
    INFO_NO_CACHED = "No cached results for \"{term}\"."
    INFO_RECENT_EMPTY = "No recent searches."
    INFO_TERM_FORGOTTEN = "Removed \"{term}\" from the cache."
    INFO_TERM_UNKNOWN = "\"{term}\" was not in the cache."
    INFO_API_URL_SET = "Search endpoint set to {value}."
    INFO_API_URL_CLEARED = "Search endpoint reset to the default."
    INFO_TIMEOUT_SET = "Network timeout set to {value}s."
    INFO_RECENT_LIMIT_SET = "Recent limit set to {value}."
    INFO_RECENCY_POLICY_SET = "Recency policy set to {value}."
    INFO_CONFIG_SUMMARY = (
        "API URL: {api_url}\n"
        "Timeout: {timeout}s\n"
        "Recent limit: {recent_limit}\n"
        "Recency policy: {recency_policy}\n"
        "Last query: {last_query}"
    )
    INFO_CACHE_SUMMARY = (
        "Cache database: {path}\n"
        "Items: {items}\n"
        "Assets: {assets}\n"
        "Search terms: {terms}\n"
        "Associations: {associations}"
    )
    INFO_CACHE_CLEARED = "Removed {count} cached item{plural}."
    INFO_CACHE_CLEAR_NONE = "Cache is already empty."

    TABLE_TITLE = "NASA image search results for \"{term}\""
    TABLE_OFFLINE_SUFFIX = " (cached)"
    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_TITLE = "Title"
    TABLE_HEADER_ID = "NASA id"
    TABLE_HEADER_CENTER = "Center"
    TABLE_HEADER_DATE = "Created"
    TABLE_HEADER_ASSETS = "Assets"
    TABLE_RECENT_TITLE = "Recent searches"
    TABLE_HEADER_TERM = "Term"
    TABLE_HEADER_SEARCHED = "Last searched"
    DETAIL_DESCRIPTION = "Description"
    DETAIL_KEYWORDS = "Keywords"
    DETAIL_ASSETS = "Assets"
    DETAIL_NO_ASSETS = "No assets available"
