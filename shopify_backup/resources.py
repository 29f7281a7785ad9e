"""Bulk queries for each backed-up resource and how to reassemble their output."""

from typing import NamedTuple

from .jsonl import Schema

__all__ = (
    "Resource",
    "ORDER_SCHEMA",
    "PRODUCT_SCHEMA",
    "COLLECTION_SCHEMA",
    "CUSTOMER_SCHEMA",
    "ORDER_BULK_QUERY",
    "PRODUCT_BULK_QUERY",
    "COLLECTION_BULK_QUERY",
    "CUSTOMER_BULK_QUERY",
    "ORDERS",
    "PRODUCTS",
    "COLLECTIONS",
    "CUSTOMERS",
)

METAFIELD_SLOT = {"Metafield": "metafields"}

ORDER_SCHEMA = Schema(
    "Order",
    {
        "LineItem": "lineItems",
        "OrderTransaction": "transactions",
        "Fulfillment": "fulfillments",
        "Refund": "refunds",
        "ShippingLine": "shippingLines",
        "DiscountApplication": "discountApplications",
        **METAFIELD_SLOT,
    },
)

PRODUCT_SCHEMA = Schema(
    "Product",
    {
        "ProductVariant": "variants",
        "ProductImage": "images",
        "MediaImage": "images",
        **METAFIELD_SLOT,
    },
    nested={"ProductVariant": Schema("ProductVariant", METAFIELD_SLOT)},
)

COLLECTION_SCHEMA = Schema("Collection", {"Product": "products", **METAFIELD_SLOT})

CUSTOMER_SCHEMA = Schema("Customer", {"MailingAddress": "addresses", **METAFIELD_SLOT})

MONEY = "shopMoney { amount currencyCode }"

ADDRESS = """
          firstName
          lastName
          company
          address1
          address2
          city
          province
          provinceCode
          country
          countryCodeV2
          zip
          phone
"""

ORDER_BULK_QUERY = f"""
{{
  orders {{
    edges {{
      node {{
        id
        legacyResourceId
        name
        email
        phone
        createdAt
        updatedAt
        processedAt
        closedAt
        cancelledAt
        cancelReason
        displayFinancialStatus
        displayFulfillmentStatus
        confirmed
        test
        taxesIncluded
        currencyCode
        presentmentCurrencyCode
        subtotalPriceSet {{ {MONEY} }}
        totalPriceSet {{ {MONEY} }}
        totalTaxSet {{ {MONEY} }}
        totalDiscountsSet {{ {MONEY} }}
        totalShippingPriceSet {{ {MONEY} }}
        totalRefundedSet {{ {MONEY} }}
        currentTotalPriceSet {{ {MONEY} }}
        note
        tags
        customer {{
          id
          email
          firstName
          lastName
        }}
        billingAddress {{{ADDRESS}        }}
        shippingAddress {{{ADDRESS}        }}
        lineItems(first: 250) {{
          edges {{
            node {{
              id
              title
              variantTitle
              quantity
              sku
              vendor
              requiresShipping
              taxable
              originalUnitPriceSet {{ {MONEY} }}
              discountedUnitPriceSet {{ {MONEY} }}
              originalTotalSet {{ {MONEY} }}
              discountedTotalSet {{ {MONEY} }}
              variant {{
                id
                legacyResourceId
              }}
              product {{
                id
                legacyResourceId
              }}
            }}
          }}
        }}
        shippingLines(first: 10) {{
          edges {{
            node {{
              id
              title
              code
              source
              originalPriceSet {{ {MONEY} }}
              discountedPriceSet {{ {MONEY} }}
            }}
          }}
        }}
        transactions(first: 50) {{
          id
          kind
          status
          gateway
          amountSet {{ {MONEY} }}
          createdAt
          processedAt
        }}
        fulfillments(first: 50) {{
          id
          status
          createdAt
          updatedAt
          trackingInfo {{
            company
            number
            url
          }}
        }}
        refunds(first: 50) {{
          id
          createdAt
          note
          totalRefundedSet {{ {MONEY} }}
        }}
        discountApplications(first: 20) {{
          edges {{
            node {{
              allocationMethod
              targetSelection
              targetType
              value {{
                ... on MoneyV2 {{
                  amount
                  currencyCode
                }}
                ... on PricingPercentageValue {{
                  percentage
                }}
              }}
            }}
          }}
        }}
        metafields(first: 50) {{
          edges {{
            node {{
              id
              namespace
              key
              value
              type
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""

PRODUCT_BULK_QUERY = f"""
{{
  products {{
    edges {{
      node {{
        id
        legacyResourceId
        title
        handle
        descriptionHtml
        vendor
        productType
        status
        tags
        createdAt
        updatedAt
        publishedAt
        templateSuffix
        hasOnlyDefaultVariant
        tracksInventory
        totalInventory
        totalVariants
        options {{
          id
          name
          position
          values
        }}
        images(first: 250) {{
          edges {{
            node {{
              id
              url
              altText
              width
              height
            }}
          }}
        }}
        featuredImage {{
          id
          url
          altText
        }}
        seo {{
          title
          description
        }}
        priceRangeV2 {{
          minVariantPrice {{
            amount
            currencyCode
          }}
          maxVariantPrice {{
            amount
            currencyCode
          }}
        }}
        metafields(first: 100) {{
          edges {{
            node {{
              id
              namespace
              key
              value
              type
              description
            }}
          }}
        }}
        variants(first: 250) {{
          edges {{
            node {{
              id
              legacyResourceId
              title
              displayName
              sku
              barcode
              position
              price
              compareAtPrice
              taxable
              taxCode
              availableForSale
              inventoryQuantity
              selectedOptions {{
                name
                value
              }}
              image {{
                id
                url
              }}
              inventoryItem {{
                id
                tracked
                sku
                requiresShipping
              }}
              metafields(first: 50) {{
                edges {{
                  node {{
                    id
                    namespace
                    key
                    value
                    type
                  }}
                }}
              }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""

COLLECTION_BULK_QUERY = """
{
  collections {
    edges {
      node {
        id
        legacyResourceId
        title
        handle
        descriptionHtml
        sortOrder
        templateSuffix
        updatedAt
        image {
          url
          altText
          width
          height
        }
        seo {
          title
          description
        }
        ruleSet {
          appliedDisjunctively
          rules {
            column
            relation
            condition
          }
        }
        metafields(first: 100) {
          edges {
            node {
              id
              namespace
              key
              value
              type
              description
            }
          }
        }
        products(first: 250) {
          edges {
            node {
              id
              legacyResourceId
            }
          }
        }
      }
    }
  }
}
"""

CUSTOMER_BULK_QUERY = """
{
  customers {
    edges {
      node {
        id
        email
        firstName
        lastName
        phone
        state
        tags
        createdAt
        updatedAt
        emailMarketingConsent {
          marketingState
          consentUpdatedAt
        }
        addresses {
          address1
          address2
          city
          province
          country
          zip
          phone
        }
        metafields {
          edges {
            node {
              id
              namespace
              key
              value
              type
            }
          }
        }
      }
    }
  }
}
"""


class Resource(NamedTuple):
    name: str
    query: str
    schema: Schema


ORDERS = Resource("orders", ORDER_BULK_QUERY, ORDER_SCHEMA)
PRODUCTS = Resource("products", PRODUCT_BULK_QUERY, PRODUCT_SCHEMA)
COLLECTIONS = Resource("collections", COLLECTION_BULK_QUERY, COLLECTION_SCHEMA)
CUSTOMERS = Resource("customers", CUSTOMER_BULK_QUERY, CUSTOMER_SCHEMA)
