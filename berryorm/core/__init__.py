"""Query compilation internals: filters, selection trees and row hydration."""
