"""
Reporting - Prompts and output post-processing.

Prompts are pt-BR. The model is asked to reason inside an
<analise_interna> block, which is removed before the report is
stored or served.
"""

import re
from datetime import date
from typing import Optional


INTERNAL_TAG = "analise_interna"

SUMMARY_MAX_CHARS = 500

_INTERNAL_BLOCK = re.compile(rf"<{INTERNAL_TAG}>.*?(</{INTERNAL_TAG}>|\Z)", re.DOTALL | re.IGNORECASE)
_SUMMARY_SECTION = re.compile(r"resumo executivo[^\n]*\n+(.*?)(?:\n\n|\n#|\Z)", re.DOTALL | re.IGNORECASE)


DAILY_REPORT_TEMPLATE = """Você é o analista-chefe de inteligência de mercado de uma plataforma de agronegócio brasileira.
Escreva o RELATÓRIO DIÁRIO do mercado de commodities agrícolas para produtores rurais.

{context}

## RACIOCÍNIO
Antes do relatório, faça sua análise numérica dentro de <{tag}>...</{tag}>:
1. Qual commodity teve a maior variação?
2. Como o câmbio do dia se relaciona com essa variação?
3. Há suportes ou resistências evidentes nos números?

## RELATÓRIO (markdown)
### 1. Resumo Executivo
Visão geral do dia em até 3 parágrafos curtos.

### 2. Radar de Commodities
As 3 commodities com movimentos mais relevantes, citando a praça.

### 3. Câmbio & Exportações
Efeito do dólar do dia sobre prêmios e preços de balcão.

### 4. Visão do Analista
Pontos de atenção de curtíssimo prazo.

## REGRAS
- Use apenas os números fornecidos.
- Sem recomendações diretas de compra ou venda.
- Sem emojis.
"""


COMMODITY_REPORT_TEMPLATE = """Você é o especialista sênior em {name} de uma plataforma de agronegócio brasileira.
Escreva uma ANÁLISE detalhada desta commodity.

## Dados da Commodity
{commodity_context}

## Notícias Relacionadas
{news_context}

## RACIOCÍNIO
Dentro de <{tag}>...</{tag}>, relacione preços e notícias, identifique
catalisadores de alta ou baixa e rascunhe níveis técnicos.

## ANÁLISE (markdown)
### 1. Resumo Executivo
Síntese da situação atual.

### 2. Análise de Preços
Comportamento recente no mercado físico e no exterior.

### 3. Fundamentos do Mercado
Oferta, demanda, clima, câmbio e exportação a partir das notícias.

### 4. Perspectivas
Riscos e janelas de oportunidade, sem ordem direta de venda.

## REGRAS
- Cite a praça de referência.
- Sem emojis. Apenas markdown.
"""


def build_daily_report_prompt(context: str) -> str:
    return DAILY_REPORT_TEMPLATE.format(context=context, tag=INTERNAL_TAG)


def build_commodity_report_prompt(name: str, commodity_context: str, news_context: str) -> str:
    return COMMODITY_REPORT_TEMPLATE.format(
        name=name,
        commodity_context=commodity_context,
        news_context=news_context or "Sem notícias recentes.",
        tag=INTERNAL_TAG,
    )


def strip_internal_reasoning(text: str) -> str:
    """Drop <analise_interna> blocks, including an unterminated one."""
    return _INTERNAL_BLOCK.sub("", text).strip()


def extract_summary(content: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """First paragraph after the "Resumo Executivo" heading, else the text head."""
    match = _SUMMARY_SECTION.search(content)
    summary: Optional[str] = match.group(1).strip() if match else None
    return (summary or content.strip())[:max_chars]


def daily_title(day: date) -> str:
    return f"Resumo do Mercado - {day.strftime('%d/%m/%Y')}"


def commodity_title(name: str, day: date) -> str:
    return f"Análise {name} - {day.strftime('%d/%m/%Y')}"
