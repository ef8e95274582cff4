from pebot.main import main

main()
