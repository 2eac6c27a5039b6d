"""Company description block shared by the generation and analysis prompts."""

from visibility_probe.config.schema import CompanyConfig


def format_company_for_prompt(company: CompanyConfig) -> str:
    """
    Render company fields as "Label: value" lines, skipping empty ones.

    Example:
        >>> print(format_company_for_prompt(CompanyConfig(
        ...     name="Bean There", url="https://beanthere.example", industry="Coffee")))
        Business Name: Bean There
        Industry: Coffee
        Website: https://beanthere.example
    """
    lines = [f"Business Name: {company.name}"]

    optional_fields = [
        ("Industry", company.industry),
        ("Description", company.description),
        ("Products/Services", company.products_services),
        ("Target Customers", company.target_customers),
        ("Location", company.location),
        ("Website", company.url),
        ("Additional Context", company.additional_context),
    ]
    for label, value in optional_fields:
        if value:
            lines.append(f"{label}: {value}")

    return "\n".join(lines)
