"""Customer message templates (WhatsApp markdown, pt-BR)."""

DEFAULT_COMPANY_NAME = "Sistema de Recarga Pro"
FOOTER = "_Mensagem automática - Não responda_"


def urgency_header(days_until_expiry: int) -> str:
    """Emoji and label for a reminder, by days left."""
    if days_until_expiry <= 1:
        return "🚨 *URGENTE*"
    if days_until_expiry <= 3:
        return "⚠️ *ATENÇÃO*"
    return "⏰ *LEMBRETE*"


def expiry_phrase(days_until_expiry: int) -> str:
    if days_until_expiry == 0:
        return "vence HOJE"
    suffix = "s" if days_until_expiry > 1 else ""
    return f"vence em {days_until_expiry} dia{suffix}"


def format_purchase_confirmation(
    customer_name: str,
    plan_name: str,
    recharge_code: str,
    company_name: str = DEFAULT_COMPANY_NAME,
) -> str:
    """Message sent when a purchase is approved with its code."""
    return (
        "🎉 *Compra Aprovada!*\n"
        "\n"
        f"Olá *{customer_name}*!\n"
        "\n"
        "Sua compra foi processada com sucesso:\n"
        "\n"
        f"📱 *Plano:* {plan_name}\n"
        f"🔑 *Código:* `{recharge_code}`\n"
        "\n"
        "Para usar seu código:\n"
        "1️⃣ Disque *321# no seu celular\n"
        "2️⃣ Digite o código quando solicitado\n"
        "3️⃣ Confirme a recarga\n"
        "\n"
        f"✅ Obrigado por escolher a *{company_name}*!\n"
        "\n"
        f"{FOOTER}"
    )


def format_pending_code(
    customer_name: str,
    plan_name: str,
    company_name: str = DEFAULT_COMPANY_NAME,
) -> str:
    """Message sent when payment succeeded but the code is still on its way."""
    return (
        "⏳ *Processando seu Pedido*\n"
        "\n"
        f"Olá *{customer_name}*!\n"
        "\n"
        f"Seu pagamento para o plano *{plan_name}* foi aprovado com sucesso!\n"
        "\n"
        "🔄 Estamos preparando seu código de recarga e você receberá em breve.\n"
        "\n"
        "⏱️ Tempo estimado: até 30 minutos\n"
        "\n"
        "Obrigado pela paciência!\n"
        "\n"
        f"*{company_name}*\n"
        "\n"
        f"{FOOTER}"
    )


def format_expiry_reminder(
    customer_name: str,
    plan_name: str,
    days_until_expiry: int,
    expiry_date: str,
    company_name: str = DEFAULT_COMPANY_NAME,
) -> str:
    """Expiry reminder.

    Args:
        customer_name: Buyer name from the purchase snapshot
        plan_name: Plan display name
        days_until_expiry: Calendar days left (0 means today)
        expiry_date: Expiry date already formatted as dd/mm/yyyy
        company_name: Signature
    """
    if days_until_expiry == 0:
        call_to_action = "🔥 Renove AGORA para não ficar sem serviço!"
    else:
        call_to_action = "💡 Renove antecipadamente e continue aproveitando nossos benefícios!"

    return (
        f"{urgency_header(days_until_expiry)}\n"
        "\n"
        f"Olá *{customer_name}*!\n"
        "\n"
        f"Seu plano *{plan_name}* {expiry_phrase(days_until_expiry)} ({expiry_date}).\n"
        "\n"
        f"{call_to_action}\n"
        "\n"
        "📞 Entre em contato conosco para renovar.\n"
        "\n"
        f"*{company_name}*\n"
        "\n"
        f"{FOOTER}"
    )
